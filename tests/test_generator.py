from __future__ import annotations

import unittest

from buildorch.environment import conventions_for
from buildorch.errors import ConfigValidationError
from buildorch.generator import StepAction, generate
from buildorch.graph import build_graph
from buildorch.planner import BuildPlanner

from tests.support import MSVC_TOOLS, generate_for, library_and_app, make_project


class GnuGenerationTests(unittest.TestCase):
    def setUp(self) -> None:
        self.project = library_and_app()
        self.root = self.project.source_root.resolve()
        self.build = self.project.build_dir
        self.generated = generate_for(self.project)

    def test_steps_follow_plan_tiers(self) -> None:
        ids = [[step.id for step in tier] for tier in self.generated.tiers]
        self.assertEqual(ids, [["compile:A/a.cpp", "archive:A"], ["compile:B/main.cpp", "link:B"]])

    def test_executable_links_library_output(self) -> None:
        archive = self.generated.step("archive:A")
        link = self.generated.step("link:B")
        library = str(self.build / "lib" / "libA.a")

        self.assertEqual(archive.outputs, (library,))
        self.assertIs(archive.action, StepAction.ARCHIVE)
        self.assertEqual(
            archive.command,
            ("/usr/bin/ar", "rcs", library, str(self.build / "obj" / "A" / "a.cpp.o")),
        )
        self.assertIn(library, link.inputs)
        self.assertIn(library, link.command)
        self.assertEqual(link.depends_on, ("compile:B/main.cpp", "archive:A"))
        self.assertEqual(link.outputs, (str(self.build / "bin" / "B"),))

    def test_compile_command_uses_absolute_paths(self) -> None:
        step = self.generated.step("compile:B/main.cpp")
        obj = str(self.build / "obj" / "B" / "main.cpp.o")
        self.assertEqual(
            step.command,
            (
                "/usr/bin/g++",
                "-c",
                "-O0",
                f"-I{self.root / 'include'}",
                str(self.root / "main.cpp"),
                "-o",
                obj,
            ),
        )
        self.assertEqual(step.cwd, self.root)
        self.assertEqual(step.outputs, (obj,))
        self.assertEqual(step.depends_on, ())

    def test_outputs_are_disjoint(self) -> None:
        outputs = [output for step in self.generated.steps() for output in step.outputs]
        self.assertEqual(len(outputs), len(set(outputs)))

    def test_mapping_and_listing(self) -> None:
        mapping = self.generated.to_mapping()
        self.assertEqual(mapping["project"], "demo")
        self.assertEqual(mapping["tiers"][1][1]["id"], "link:B")
        lines = list(self.generated.format_lines())
        self.assertEqual(lines[0], "# tier 0")
        self.assertIn("[archive] Archiving libA.a", lines)
        self.assertEqual([step.id for step in self.generated.node_steps("A")], ["compile:A/a.cpp", "archive:A"])


class OptionAndLinkTests(unittest.TestCase):
    def test_options_and_definitions_become_flags(self) -> None:
        project = make_project(
            [
                {
                    "name": "app",
                    "kind": "executable",
                    "sources": ["main.cpp", "util.c"],
                    "options": {"optimization": "2", "debug": True},
                    "definitions": {"FOO": True, "LEVEL": 3, "OFF": False},
                }
            ],
            options={"standard": "c++17"},
        )
        generated = generate_for(project)

        cxx = generated.step("compile:app/main.cpp").command
        self.assertEqual(cxx[:5], ("/usr/bin/g++", "-c", "-O2", "-g", "-std=c++17"))
        self.assertIn("-DFOO", cxx)
        self.assertIn("-DLEVEL=3", cxx)
        self.assertFalse(any(part.startswith("-DOFF") for part in cxx))

        c = generated.step("compile:app/util.c").command
        self.assertEqual(c[0], "/usr/bin/gcc")
        self.assertNotIn("-std=c++17", c)

        link = generated.step("link:app").command
        self.assertEqual(link[0], "/usr/bin/g++")
        self.assertIn("-g", link)

    def test_shared_library_and_external_libraries(self) -> None:
        project = make_project(
            [
                {"name": "util", "kind": "shared_library", "sources": ["util.c"], "dependencies": ["m"]},
                {"name": "app", "kind": "executable", "sources": ["main.c"], "dependencies": ["util", "z"]},
            ],
            external_libraries={"m": None, "z": {"library_dirs": ["/opt/z/lib"]}},
        )
        generated = generate_for(project)
        build = project.build_dir

        compile_util = generated.step("compile:util/util.c").command
        self.assertIn("-fPIC", compile_util)
        self.assertNotIn("-fPIC", generated.step("compile:app/main.c").command)

        link_util = generated.step("link:util")
        self.assertIn("-shared", link_util.command)
        self.assertIn("-lm", link_util.command)
        self.assertEqual(link_util.outputs, (str(build / "lib" / "libutil.so"),))

        link_app = generated.step("link:app").command
        self.assertIn(str(build / "lib" / "libutil.so"), link_app)
        self.assertIn(f"-Wl,-rpath,{build / 'lib'}", link_app)
        self.assertIn("-L/opt/z/lib", link_app)
        self.assertIn("-lz", link_app)
        self.assertNotIn("-lm", link_app)
        self.assertEqual(link_app[-2:], ("-o", str(build / "bin" / "app")))

    def test_archive_order_on_link_line(self) -> None:
        project = make_project(
            [
                {"name": "core", "kind": "static_library", "sources": ["core.c"]},
                {"name": "util", "kind": "static_library", "sources": ["util.c"], "dependencies": ["core"]},
                {"name": "app", "kind": "executable", "sources": ["main.c"], "dependencies": ["core", "util"]},
            ]
        )
        link = generate_for(project).step("link:app").command
        lib = project.build_dir / "lib"

        self.assertLess(link.index(str(lib / "libutil.a")), link.index(str(lib / "libcore.a")))

    def test_static_library_objects_are_position_independent(self) -> None:
        project = make_project(
            [
                {"name": "core", "kind": "static_library", "sources": ["core.c"]},
                {"name": "plugin", "kind": "shared_library", "sources": ["plugin.c"], "dependencies": ["core"]},
            ]
        )
        generated = generate_for(project)

        self.assertIn("-fPIC", generated.step("compile:core/core.c").command)
        self.assertIn("-fPIC", generated.step("compile:plugin/plugin.c").command)
        self.assertIn(str(project.build_dir / "lib" / "libcore.a"), generated.step("link:plugin").command)

        windows = generate_for(project, os_name="windows", tools=MSVC_TOOLS)
        self.assertNotIn("-fPIC", windows.step("compile:core/core.c").command)

    def test_darwin_uses_dynamiclib(self) -> None:
        project = make_project([{"name": "util", "kind": "shared_library", "sources": ["util.c"]}])
        generated = generate_for(project, os_name="darwin")
        link = generated.step("link:util")
        self.assertIn("-dynamiclib", link.command)
        self.assertTrue(link.outputs[0].endswith("libutil.dylib"))

    def test_colliding_objects_are_rejected(self) -> None:
        project = make_project([{"name": "app", "kind": "executable", "sources": ["../a.c", "__/a.c"]}])
        with self.assertRaises(ConfigValidationError) as ctx:
            generate_for(project)
        self.assertIn("declared by both", str(ctx.exception))

    def test_unplanned_graph_cannot_be_generated(self) -> None:
        plan = BuildPlanner(None).plan(build_graph(library_and_app()))
        with self.assertRaises(ConfigValidationError):
            generate(plan, conventions=conventions_for("linux", "x86_64"))

    def test_translation_unit_steps(self) -> None:
        generated = generate_for(library_and_app(), granularity="translation_unit")
        ids = [[step.id for step in tier] for tier in generated.tiers]
        self.assertEqual(ids, [["compile:A/a.cpp", "compile:B/main.cpp"], ["archive:A"], ["link:B"]])
        self.assertEqual(generated.step("compile:B/main.cpp").node, "B/main.cpp")
        self.assertEqual(generated.step("link:B").depends_on, ("compile:B/main.cpp", "archive:A"))


class MsvcGenerationTests(unittest.TestCase):
    def test_windows_artifacts_and_flags(self) -> None:
        project = make_project(
            [
                {"name": "core", "kind": "static_library", "sources": ["core.cpp"]},
                {"name": "plugin", "kind": "shared_library", "sources": ["plugin.cpp"], "dependencies": ["core"]},
                {"name": "app", "kind": "executable", "sources": ["main.cpp"], "dependencies": ["plugin"], "options": {"debug": True}},
            ]
        )
        generated = generate_for(project, os_name="windows", tools=MSVC_TOOLS)
        build = project.build_dir

        compile_core = generated.step("compile:core/core.cpp").command
        self.assertEqual(compile_core[:4], ("/usr/bin/cl", "/nologo", "/c", "/Od"))
        self.assertEqual(compile_core[-1], f"/Fo{build / 'obj' / 'core' / 'core.cpp.obj'}")

        archive = generated.step("archive:core").command
        self.assertEqual(archive[:3], ("/usr/bin/lib", "/nologo", f"/OUT:{build / 'lib' / 'core.lib'}"))

        plugin = generated.step("link:plugin")
        self.assertIn("/LD", plugin.command)
        self.assertIn(f"/IMPLIB:{build / 'lib' / 'plugin.lib'}", plugin.command)
        self.assertEqual(plugin.outputs, (str(build / "bin" / "plugin.dll"), str(build / "lib" / "plugin.lib")))

        app = generated.step("link:app")
        self.assertIn(str(build / "lib" / "plugin.lib"), app.inputs)
        self.assertIn("/Z7", app.command)
        self.assertIn(f"/Fe{build / 'bin' / 'app.exe'}", app.command)


if __name__ == "__main__":
    unittest.main()
