from __future__ import annotations

from pathlib import Path
from typing import List
import io
import tempfile
import unittest

from buildorch.config_loader import EngineConfig
from buildorch.console import Console
from buildorch.environment import conventions_for
from buildorch.errors import ToolchainNotFound
from buildorch.session import BuildSession

from tests.support import GNU_TOOLS, ScriptedRunner, fake_which, library_and_app, version_responses


def _touch_output(command: List[str]):
    Path(command[command.index("-o") + 1] if "-o" in command else command[2]).touch()
    return (0, "", "")


class BuildSessionTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)
        self.root = Path(self._tmp.name)
        self.project = library_and_app(base_dir=self.root)
        self.probes = ScriptedRunner(version_responses(GNU_TOOLS))
        self.runner = ScriptedRunner({"g++": _touch_output, "ar": _touch_output})
        self.out = io.StringIO()

    def _session(self, **kwargs) -> BuildSession:
        options = {
            "runner": self.runner,
            "probe_runner": self.probes,
            "console": Console("info", stream=self.out, error_stream=io.StringIO()),
            "conventions": conventions_for("linux", "x86_64"),
            "which": fake_which(GNU_TOOLS),
            "engine": EngineConfig(jobs=2),
        }
        options.update(kwargs)
        return BuildSession(self.project, **options)

    def test_plan_is_memoized_within_session(self) -> None:
        session = self._session()
        plan = session.plan()
        probes = len(self.probes.calls)
        self.assertIs(session.plan(), plan)
        self.assertIs(session.preview(), session.preview())
        self.assertEqual(len(self.probes.calls), probes)
        self.assertEqual(sorted(self.probes.executables()), ["ar", "g++"])

    def test_close_drops_cached_toolchains(self) -> None:
        with self._session() as session:
            session.plan()
        self.assertEqual(len(session.resolver.cached()), 0)

        session.plan()
        self.assertEqual(sorted(self.probes.executables()), ["ar", "ar", "g++", "g++"])

    def test_order_needs_no_toolchains(self) -> None:
        session = self._session(which=fake_which([]))
        plan = session.order()
        self.assertEqual([[node.name for node in tier] for tier in plan.tiers], [["A"], ["B"]])
        self.assertEqual(self.probes.calls, [])
        with self.assertRaises(ToolchainNotFound):
            session.plan()

    def test_generate_defaults_to_build_dir(self) -> None:
        session = self._session()
        written = session.generate("make")
        self.assertEqual(written, self.root / "build" / "Makefile")
        self.assertIn("all: tier_1", written.read_text(encoding="utf-8"))
        self.assertIn(f"[INFO] Wrote make backend to {written}", self.out.getvalue())
        self.assertIn("rule run", session.render())

    def test_execute(self) -> None:
        report = self._session().execute()
        self.assertEqual(report.exit_code, 0)
        self.assertEqual(len(self.runner.calls), 4)
        self.assertTrue((self.root / "build" / "bin" / "B").is_file())
        self.assertIn("[INFO] Building demo 1.0.0: 4 step(s) in 2 tier(s) with 2 job(s)", self.out.getvalue())
        self.assertIn("[INFO] completed: 4 succeeded, 0 failed, 0 skipped", self.out.getvalue())

    def test_dry_run_records_commands(self) -> None:
        session = self._session()
        report = session.execute(dry_run=True)

        self.assertEqual(report.exit_code, 0)
        self.assertEqual(self.runner.calls, [])
        self.assertFalse((self.root / "build").exists())
        recorded = [record.command for record in session.recorded.iter_commands()]
        self.assertEqual([Path(command[0]).name for command in recorded], ["g++", "ar", "g++", "g++"])
        self.assertEqual(recorded[1][:2], ["/usr/bin/ar", "rcs"])
        self.assertIn("[DRY] /usr/bin/ar rcs", self.out.getvalue())


if __name__ == "__main__":
    unittest.main()
