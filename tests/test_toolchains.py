from __future__ import annotations

import unittest

from core.command_runner import CommandLaunchError, CommandResult

from buildorch.errors import ConfigValidationError, ToolchainNotFound
from buildorch.model import Language
from buildorch.toolchains import (
    Capability,
    ToolchainRegistry,
    ToolchainResolver,
    ToolFamily,
    ToolKind,
    detect_architectures,
    detect_family,
    normalize_standard,
    parse_version,
    supported_standards,
)

from tests.support import (
    CL_VERSION,
    GNU_TOOLS,
    LLVM_TOOLS,
    OLD_GXX_VERSION,
    ScriptedRunner,
    fake_which,
    version_responses,
)

CXX17 = Capability(kind=ToolKind.COMPILER, language=Language.CXX, standard="c++17")


def _resolver(runner: ScriptedRunner, available, **kwargs) -> ToolchainResolver:
    kwargs.setdefault("os_name", "linux")
    kwargs.setdefault("host_architecture", "x86_64")
    return ToolchainResolver(runner, which=fake_which(available), **kwargs)


class CapabilityTests(unittest.TestCase):
    def test_key_and_description(self) -> None:
        capability = Capability(ToolKind.COMPILER, Language.CXX, "c++17", "x86_64")
        self.assertEqual(capability.key, "compiler:cxx:std=c++17:arch=x86_64")
        self.assertEqual(
            capability.describe(),
            "C++ compiler supporting standard c++17 and architecture x86_64",
        )
        self.assertEqual(Capability(ToolKind.ARCHIVER).describe(), "archiver")


class ProbeParsingTests(unittest.TestCase):
    def test_parse_version(self) -> None:
        self.assertEqual(parse_version(GNU_TOOLS["g++"]), "13.2.0")
        self.assertEqual(parse_version(LLVM_TOOLS["clang++"]), "17.0.6")
        self.assertEqual(parse_version(CL_VERSION), "19.38.33130")
        self.assertIsNone(parse_version("no digits here"))

    def test_detect_family(self) -> None:
        self.assertIs(detect_family(GNU_TOOLS["g++"], ToolFamily.LLVM), ToolFamily.GNU)
        self.assertIs(detect_family(LLVM_TOOLS["clang++"], ToolFamily.GNU), ToolFamily.LLVM)
        self.assertIs(detect_family(CL_VERSION, ToolFamily.GNU), ToolFamily.MSVC)
        self.assertIs(detect_family("mystery 1.0", ToolFamily.GNU), ToolFamily.GNU)

    def test_supported_standards_follow_version(self) -> None:
        standards = supported_standards(ToolFamily.GNU, "9.4.0", Language.CXX)
        self.assertIn("c++17", standards)
        self.assertNotIn("c++20", standards)
        self.assertNotIn("c11", standards)
        self.assertEqual(supported_standards(ToolFamily.GNU, "9.4.0", None), frozenset())

    def test_normalize_standard(self) -> None:
        self.assertEqual(normalize_standard("gnu++17"), "c++17")
        self.assertEqual(normalize_standard("c++1z"), "c++17")
        self.assertEqual(normalize_standard("C11"), "c11")

    def test_detect_architectures(self) -> None:
        self.assertEqual(detect_architectures("Target: aarch64-linux-gnu\n", "x86_64"), frozenset({"aarch64"}))
        self.assertEqual(detect_architectures(CL_VERSION, "arm64"), frozenset({"x86_64"}))
        self.assertEqual(detect_architectures("gcc 13", "AMD64"), frozenset({"x86_64"}))


class ToolchainResolverTests(unittest.TestCase):
    def test_selects_first_matching_candidate(self) -> None:
        runner = ScriptedRunner(version_responses(GNU_TOOLS, LLVM_TOOLS))
        resolver = _resolver(runner, ["g++", "clang++"])

        descriptor = resolver.resolve(CXX17)

        self.assertEqual(descriptor.executable, "/usr/bin/g++")
        self.assertIs(descriptor.family, ToolFamily.GNU)
        self.assertEqual(descriptor.toolchain, "gcc")
        self.assertEqual(descriptor.version, "13.2.0")
        self.assertEqual(descriptor.capability, CXX17.key)
        self.assertTrue(descriptor.supports_standard("gnu++17"))
        self.assertEqual(runner.calls, [["/usr/bin/g++", "--version"]])

    def test_repeated_resolution_probes_once(self) -> None:
        runner = ScriptedRunner(version_responses(GNU_TOOLS))
        resolver = _resolver(runner, ["g++"])

        first = resolver.resolve(CXX17)
        second = resolver.resolve(CXX17)

        self.assertIs(first, second)
        self.assertEqual(len(runner.calls), 1)
        self.assertEqual(resolver.probe_count, 1)
        self.assertEqual(resolver.cached(), {CXX17.key: first})

    def test_probe_output_is_shared_between_capabilities(self) -> None:
        runner = ScriptedRunner(version_responses(GNU_TOOLS))
        resolver = _resolver(runner, ["g++"])

        resolver.resolve(CXX17)
        resolver.resolve(Capability(ToolKind.LINKER, Language.CXX))

        self.assertEqual(resolver.probe_count, 1)

    def test_missing_compiler_lists_every_candidate(self) -> None:
        runner = ScriptedRunner()
        resolver = _resolver(runner, [])

        with self.assertRaises(ToolchainNotFound) as ctx:
            resolver.resolve(CXX17)

        error = ctx.exception
        self.assertEqual(error.capability, "C++ compiler supporting standard c++17")
        self.assertEqual(error.candidates, ["g++", "clang++", "cl"])
        self.assertEqual(len(error.reasons), 3)
        self.assertIn("not found on PATH", error.reasons[0])
        self.assertEqual(runner.calls, [])

    def test_failed_resolution_is_memoized(self) -> None:
        runner = ScriptedRunner({"g++": (1, "", "broken")})
        resolver = _resolver(runner, ["g++"])

        with self.assertRaises(ToolchainNotFound):
            resolver.resolve(CXX17)
        with self.assertRaises(ToolchainNotFound):
            resolver.resolve(CXX17)
        self.assertEqual(len(runner.calls), 1)

    def test_hanging_candidate_is_skipped(self) -> None:
        hung = CommandResult(command=["g++"], returncode=-15, stdout="", stderr="", timed_out=True)
        responses = version_responses(LLVM_TOOLS)
        responses["g++"] = hung
        runner = ScriptedRunner(responses)
        resolver = _resolver(runner, ["g++", "clang++"], probe_timeout=0.5)

        descriptor = resolver.resolve(CXX17)

        self.assertEqual(descriptor.executable, "/usr/bin/clang++")
        self.assertIs(descriptor.family, ToolFamily.LLVM)

    def test_candidate_that_cannot_start_is_skipped(self) -> None:
        responses = version_responses(LLVM_TOOLS)
        responses["g++"] = CommandLaunchError(["/usr/bin/g++"], PermissionError(13, "Permission denied"))
        runner = ScriptedRunner(responses)
        resolver = _resolver(runner, ["g++", "clang++"])

        self.assertEqual(resolver.resolve(CXX17).executable, "/usr/bin/clang++")

    def test_old_compiler_without_standard_is_rejected(self) -> None:
        responses = version_responses(LLVM_TOOLS)
        responses["g++"] = (0, OLD_GXX_VERSION, "")
        runner = ScriptedRunner(responses)
        resolver = _resolver(runner, ["g++", "clang++"])

        c20 = Capability(ToolKind.COMPILER, Language.CXX, "c++20")
        self.assertEqual(resolver.resolve(c20).executable, "/usr/bin/clang++")

        only_gcc = _resolver(ScriptedRunner({"g++": (0, OLD_GXX_VERSION, "")}), ["g++"])
        with self.assertRaises(ToolchainNotFound) as ctx:
            only_gcc.resolve(c20)
        self.assertIn("does not support c++20", str(ctx.exception))

    def test_architecture_mismatch_is_rejected(self) -> None:
        runner = ScriptedRunner(version_responses(GNU_TOOLS))
        resolver = _resolver(runner, ["g++"])

        with self.assertRaises(ToolchainNotFound) as ctx:
            resolver.resolve(Capability(ToolKind.COMPILER, Language.CXX, architecture="aarch64"))
        self.assertIn("not aarch64", str(ctx.exception))

    def test_preferred_toolchain_is_the_only_candidate(self) -> None:
        runner = ScriptedRunner(version_responses(GNU_TOOLS, LLVM_TOOLS))
        resolver = _resolver(runner, ["g++", "clang++"], preferred="clang")

        self.assertEqual([candidate.tool for candidate in resolver.candidates(CXX17)], ["clang++"])
        self.assertEqual(resolver.resolve(CXX17).toolchain, "clang")

    def test_unknown_preferred_toolchain(self) -> None:
        resolver = _resolver(ScriptedRunner(), [], preferred="icc")
        with self.assertRaises(ConfigValidationError):
            resolver.resolve(CXX17)

    def test_host_order_depends_on_platform(self) -> None:
        resolver = _resolver(ScriptedRunner(), [], os_name="windows")
        archivers = [candidate.tool for candidate in resolver.candidates(Capability(ToolKind.ARCHIVER))]
        self.assertEqual(archivers, ["lib", "llvm-ar", "ar"])

    def test_custom_toolchains_follow_builtins(self) -> None:
        registry = ToolchainRegistry.with_builtins()
        registry.merge_from_mapping({"cross": {"family": "gnu", "cc": "arm-gcc", "cxx": "arm-g++", "archiver": "arm-ar"}})
        resolver = _resolver(ScriptedRunner(), [], registry=registry)

        tools = [candidate.tool for candidate in resolver.candidates(Capability(ToolKind.COMPILER, Language.C))]
        self.assertEqual(tools, ["gcc", "clang", "cl", "arm-gcc"])

    def test_clear_drops_memoized_results(self) -> None:
        runner = ScriptedRunner(version_responses(GNU_TOOLS))
        resolver = _resolver(runner, ["g++"])

        resolver.resolve(CXX17)
        resolver.clear()
        resolver.resolve(CXX17)

        self.assertEqual(len(runner.calls), 2)


class ToolchainRegistryTests(unittest.TestCase):
    def test_override_keeps_builtin_family(self) -> None:
        registry = ToolchainRegistry.with_builtins()
        registry.merge_from_mapping({"gcc": {"cxx": "g++-13"}})
        gcc = registry.get("gcc")
        self.assertEqual(gcc.cxx, "g++-13")
        self.assertEqual(gcc.cc, "gcc")
        self.assertIs(gcc.family, ToolFamily.GNU)

    def test_definition_requires_family(self) -> None:
        registry = ToolchainRegistry.with_builtins()
        with self.assertRaises(ConfigValidationError):
            registry.merge_from_mapping({"custom": {"cc": "tcc"}})

    def test_unknown_keys_are_rejected(self) -> None:
        registry = ToolchainRegistry.with_builtins()
        with self.assertRaises(ConfigValidationError):
            registry.merge_from_mapping({"custom": {"family": "gnu", "cc": "tcc", "fortran": "gfortran"}})


if __name__ == "__main__":
    unittest.main()
