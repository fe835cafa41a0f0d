from __future__ import annotations

import random
import unittest

from buildorch.errors import ToolchainNotFound
from buildorch.graph import LINK_SLOT, build_graph
from buildorch.model import Language
from buildorch.planner import BuildPlanner
from buildorch.toolchains import ToolchainResolver, ToolKind

from tests.support import GNU_TOOLS, ScriptedRunner, fake_which, library_and_app, make_project, version_responses


def _gnu_resolver(runner: ScriptedRunner | None = None) -> ToolchainResolver:
    return ToolchainResolver(
        runner or ScriptedRunner(version_responses(GNU_TOOLS)),
        os_name="linux",
        host_architecture="x86_64",
        which=fake_which(GNU_TOOLS),
    )


class BuildPlannerTests(unittest.TestCase):
    def test_library_before_executable(self) -> None:
        plan = BuildPlanner(_gnu_resolver()).plan(build_graph(library_and_app()))

        self.assertEqual(plan.tier_names(), [["A"], ["B"]])
        self.assertEqual(plan.tier_of("A"), 0)
        self.assertEqual(plan.tier_of("B"), 1)
        self.assertEqual([node.name for node in plan.nodes()], ["A", "B"])

    def test_binds_toolchains_per_node(self) -> None:
        runner = ScriptedRunner(version_responses(GNU_TOOLS))
        plan = BuildPlanner(_gnu_resolver(runner)).plan(build_graph(library_and_app()))

        a = plan.graph.node("A")
        b = plan.graph.node("B")
        self.assertEqual(a.toolchains["compile:cxx"].executable, "/usr/bin/g++")
        self.assertEqual(a.toolchains[LINK_SLOT].executable, "/usr/bin/ar")
        self.assertIs(a.toolchains[LINK_SLOT].kind, ToolKind.ARCHIVER)
        self.assertIs(b.toolchains[LINK_SLOT].kind, ToolKind.LINKER)
        self.assertEqual(sorted(plan.toolchains), ["archiver", "compiler:cxx", "linker:cxx"])
        # g++ serves both compiling and linking; ar is probed once.
        self.assertEqual(sorted(runner.executables()), ["ar", "g++"])

    def test_standard_applies_to_its_language_only(self) -> None:
        project = make_project(
            [{"name": "mixed", "kind": "executable", "sources": ["a.c", "b.cpp"]}],
            options={"standard": "c++17"},
        )
        graph = build_graph(project)
        requirements = BuildPlanner(None).requirements(project, graph.node("mixed"))

        self.assertIsNone(requirements["compile:c"].standard)
        self.assertEqual(requirements["compile:cxx"].standard, "c++17")
        self.assertIs(requirements[LINK_SLOT].language, Language.CXX)

    def test_planning_is_idempotent(self) -> None:
        project = library_and_app()
        first = BuildPlanner(_gnu_resolver()).plan(build_graph(project))
        second = BuildPlanner(_gnu_resolver()).plan(build_graph(project))
        self.assertEqual(first.tier_names(), second.tier_names())
        self.assertEqual(first.to_mapping(), second.to_mapping())

    def test_tiers_are_sound_for_generated_projects(self) -> None:
        rng = random.Random(7)
        for size in (3, 8, 15):
            targets = []
            for index in range(size):
                earlier = [f"lib{other}" for other in range(index)]
                deps = rng.sample(earlier, rng.randint(0, min(2, len(earlier))))
                targets.append({"name": f"lib{index}", "kind": "static_library", "sources": [f"l{index}.c"], "dependencies": deps})
            rng.shuffle(targets)
            project = make_project(targets)
            plan = BuildPlanner(None).plan(build_graph(project))
            for target in project.targets:
                for dep in target.dependencies:
                    self.assertLess(plan.tier_of(dep), plan.tier_of(target.name))

    def test_translation_unit_plan(self) -> None:
        graph = build_graph(library_and_app(), granularity="translation_unit")
        plan = BuildPlanner(_gnu_resolver()).plan(graph)

        self.assertEqual(plan.tier_names(), [["A/a.cpp", "B/main.cpp"], ["A"], ["B"]])
        self.assertIn("compile:cxx", plan.graph.node("A/a.cpp").toolchains)
        self.assertNotIn(LINK_SLOT, plan.graph.node("A/a.cpp").toolchains)
        self.assertEqual(list(plan.graph.node("B").toolchains), [LINK_SLOT])

    def test_missing_toolchain_fails_before_binding(self) -> None:
        runner = ScriptedRunner()
        resolver = ToolchainResolver(runner, os_name="linux", host_architecture="x86_64", which=fake_which([]))
        graph = build_graph(library_and_app())

        with self.assertRaises(ToolchainNotFound) as ctx:
            BuildPlanner(resolver).plan(graph)

        self.assertEqual(ctx.exception.candidates, ["g++", "clang++", "cl"])
        self.assertTrue(all(not node.toolchains for node in graph))
        self.assertEqual(runner.calls, [])

    def test_order_only_plan_has_no_toolchains(self) -> None:
        plan = BuildPlanner(None).plan(build_graph(library_and_app()))
        self.assertEqual(plan.toolchains, {})
        self.assertEqual(plan.to_mapping()["tiers"][1][0]["predecessors"], ["A"])


if __name__ == "__main__":
    unittest.main()
