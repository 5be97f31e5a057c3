#!/usr/bin/env python3
# SPDX-License-Identifier: Apache-2.0

"""
Regenerates `src/version.ts` for the TypeScript SDK.

The SDK version comes from `package.json` and the targeted RPC version comes
from the `[workspace.package]` table of the repository root `Cargo.toml`.
Both values are copied verbatim into the generated file:

  export const PACKAGE_VERSION = '<package.json version>';
  export const TARGETED_RPC_VERSION = '<Cargo.toml workspace.package.version>';

The license and warning headers are fixed text. The warning names this
script, `genversion.py`, where the JavaScript generator it replaces wrote
`genversion.mjs`, so the header differs from older generated files in that
one word.

Usage (from the SDK directory, two levels below the repo root):
  python3 scripts/genversion.py           # rewrite src/version.ts
  python3 scripts/genversion.py --check   # fail if src/version.ts is stale
"""

from __future__ import annotations

import argparse
import difflib
import json
import pathlib
import sys
import tomllib
from dataclasses import dataclass
from typing import Any, List, Optional, Sequence

import termcolor

LICENSE_HEADER = (
    "// Copyright (c) dWallet Labs, Ltd.\n"
    "// SPDX-License-Identifier: BSD-3-Clause-Clear\n\n"
)

WARNING_HEADER = (
    "// This file is generated by genversion.py. Do not edit it directly.\n\n"
)

DEFAULT_PACKAGE_MANIFEST = pathlib.Path("package.json")
DEFAULT_WORKSPACE_MANIFEST = pathlib.Path("..", "..", "Cargo.toml")
DEFAULT_OUTPUT = pathlib.Path("src", "version.ts")

EXIT_OK = 0
EXIT_STALE = 1
EXIT_ERROR = 2


class GenVersionError(Exception):
    """Base class for failures while generating the version file."""


class ManifestNotFoundError(GenVersionError):
    pass


class ManifestParseError(GenVersionError):
    pass


class MissingFieldError(GenVersionError):
    """Raised when a manifest lacks the expected key path (or it is not a string)."""

    def __init__(self, path: pathlib.Path, key_path: str, detail: str = "is missing"):
        self.path = path
        self.key_path = key_path
        super().__init__(f"{path}: field '{key_path}' {detail}")


class VersionFileWriteError(GenVersionError):
    pass


@dataclass(frozen=True)
class PackageManifest:
    version: str


@dataclass(frozen=True)
class WorkspaceManifest:
    # `workspace.package.version` from the root Cargo.toml.
    version: str


@dataclass(frozen=True)
class GeneratedVersionFile:
    package_version: str
    rpc_version: str
    text: str


def _read_text(path: pathlib.Path) -> str:
    try:
        with path.open("r", encoding="utf-8") as f:
            return f.read()
    except FileNotFoundError as e:
        raise ManifestNotFoundError(f"could not find {path}") from e
    except UnicodeDecodeError as e:
        raise ManifestParseError(f"{path} is not valid UTF-8: {e}") from e


def _lookup_string(data: Any, key_path: str, path: pathlib.Path) -> str:
    """Walk `data` along a dotted key path and return the string found there."""
    node = data
    for key in key_path.split("."):
        if not isinstance(node, dict) or key not in node:
            raise MissingFieldError(path, key_path)
        node = node[key]
    if not isinstance(node, str):
        raise MissingFieldError(
            path, key_path, f"is not a string (got {type(node).__name__})"
        )
    return node


def read_package_manifest(path: pathlib.Path) -> PackageManifest:
    text = _read_text(path)
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise ManifestParseError(f"{path} is not valid JSON: {e}") from e
    return PackageManifest(version=_lookup_string(data, "version", path))


def read_workspace_manifest(path: pathlib.Path) -> WorkspaceManifest:
    text = _read_text(path)
    try:
        data = tomllib.loads(text)
    except tomllib.TOMLDecodeError as e:
        raise ManifestParseError(f"{path} is not valid TOML: {e}") from e
    return WorkspaceManifest(
        version=_lookup_string(data, "workspace.package.version", path)
    )


def render_version_file(package_version: str, rpc_version: str) -> str:
    # Versions are substituted as-is; quotes inside them are not escaped.
    return (
        LICENSE_HEADER
        + WARNING_HEADER
        + f"export const PACKAGE_VERSION = '{package_version}';\n"
        + f"export const TARGETED_RPC_VERSION = '{rpc_version}';\n"
    )


def write_version_file(path: pathlib.Path, text: str) -> None:
    try:
        with path.open("w", encoding="utf-8", newline="\n") as f:
            f.write(text)
    except OSError as e:
        raise VersionFileWriteError(f"failed to write {path}: {e}") from e


def build_version_file(
    package_manifest_path: pathlib.Path, workspace_manifest_path: pathlib.Path
) -> GeneratedVersionFile:
    """Read both manifests and return what the version file should contain."""
    pkg = read_package_manifest(package_manifest_path)
    cargo = read_workspace_manifest(workspace_manifest_path)
    return GeneratedVersionFile(
        package_version=pkg.version,
        rpc_version=cargo.version,
        text=render_version_file(pkg.version, cargo.version),
    )


def generate(
    package_manifest_path: pathlib.Path = DEFAULT_PACKAGE_MANIFEST,
    workspace_manifest_path: pathlib.Path = DEFAULT_WORKSPACE_MANIFEST,
    output_path: pathlib.Path = DEFAULT_OUTPUT,
) -> GeneratedVersionFile:
    """Regenerate the version file and return what was written.

    Nothing is written unless both manifests were read and parsed.
    """
    generated = build_version_file(package_manifest_path, workspace_manifest_path)
    write_version_file(output_path, generated.text)
    return generated


def check(
    package_manifest_path: pathlib.Path,
    workspace_manifest_path: pathlib.Path,
    output_path: pathlib.Path,
) -> List[str]:
    """Return a unified diff of on-disk vs expected content; empty if up to date."""
    want = build_version_file(package_manifest_path, workspace_manifest_path).text
    try:
        # Compare raw bytes; universal newlines would hide CRLF endings.
        got = output_path.read_bytes().decode("utf-8", errors="replace")
    except FileNotFoundError:
        got = ""
    if got == want:
        return []
    return list(
        difflib.unified_diff(
            got.splitlines(keepends=True),
            want.splitlines(keepends=True),
            fromfile=f"{output_path} (on disk)",
            tofile=f"{output_path} (expected)",
        )
    )


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description=(
            "Generate src/version.ts from package.json and the workspace Cargo.toml."
        )
    )
    parser.add_argument(
        "--package-manifest",
        type=pathlib.Path,
        default=DEFAULT_PACKAGE_MANIFEST,
        help="Path to package.json (default: %(default)s).",
    )
    parser.add_argument(
        "--workspace-manifest",
        type=pathlib.Path,
        default=DEFAULT_WORKSPACE_MANIFEST,
        help="Path to the workspace Cargo.toml (default: %(default)s).",
    )
    parser.add_argument(
        "--output",
        type=pathlib.Path,
        default=DEFAULT_OUTPUT,
        help="Path of the generated file (default: %(default)s).",
    )
    parser.add_argument(
        "--check",
        action="store_true",
        help="Do not write; exit 1 if the generated file is missing or stale.",
    )
    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    try:
        if args.check:
            diff = check(args.package_manifest, args.workspace_manifest, args.output)
            if diff:
                termcolor.cprint(
                    f"{args.output} is out of date; rerun genversion.py to regenerate it.",
                    "yellow",
                    file=sys.stderr,
                )
                sys.stderr.writelines(diff)
                return EXIT_STALE
            termcolor.cprint(f"{args.output} is up to date", "green")
            return EXIT_OK

        generated = generate(
            args.package_manifest, args.workspace_manifest, args.output
        )
    except GenVersionError as e:
        termcolor.cprint(f"error: {e}", "red", file=sys.stderr)
        return EXIT_ERROR

    termcolor.cprint(
        f"Wrote {args.output} (PACKAGE_VERSION={generated.package_version}, "
        f"TARGETED_RPC_VERSION={generated.rpc_version})",
        "green",
    )
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())


# -- Inline tests (pytest will discover these when importing this module)


def _make_sdk_tree(
    root: pathlib.Path,
    package_json: str = '{"name": "@scope/sdk", "version": "1.2.3"}\n',
    cargo_toml: str = '[workspace]\nmembers = []\n\n[workspace.package]\nversion = "0.9.0-beta"\n',
) -> pathlib.Path:
    """Lay out <root>/Cargo.toml and <root>/sdk/typescript/{package.json,src/}."""
    sdk = root / "sdk" / "typescript"
    (sdk / "src").mkdir(parents=True)
    (root / "Cargo.toml").write_text(cargo_toml, encoding="utf-8")
    (sdk / "package.json").write_text(package_json, encoding="utf-8")
    return sdk


def test_render_version_file_matches_template():
    want = (
        "// Copyright (c) dWallet Labs, Ltd.\n"
        "// SPDX-License-Identifier: BSD-3-Clause-Clear\n"
        "\n"
        "// This file is generated by genversion.py. Do not edit it directly.\n"
        "\n"
        "export const PACKAGE_VERSION = '1.2.3';\n"
        "export const TARGETED_RPC_VERSION = '0.9.0-beta';\n"
    )
    assert render_version_file("1.2.3", "0.9.0-beta") == want


def test_render_version_file_headers_do_not_depend_on_versions():
    header = LICENSE_HEADER + WARNING_HEADER
    for pkg_version, rpc_version in [("1.2.3", "0.9.0"), ("", ""), ("9.9.9-rc.1", "x")]:
        assert render_version_file(pkg_version, rpc_version).startswith(header)


def test_render_version_file_substitutes_verbatim():
    # No trimming, no escaping, no semver validation.
    text = render_version_file(" 1.0 ", "it's")
    assert "export const PACKAGE_VERSION = ' 1.0 ';\n" in text
    assert "export const TARGETED_RPC_VERSION = 'it's';\n" in text


def test_generate_scenario(tmp_path):
    sdk = _make_sdk_tree(tmp_path)
    out = sdk / "src" / "version.ts"
    generated = generate(sdk / "package.json", tmp_path / "Cargo.toml", out)
    assert generated.package_version == "1.2.3"
    assert generated.rpc_version == "0.9.0-beta"
    assert out.read_bytes() == generated.text.encode("utf-8")
    assert generated.text.endswith(
        "export const PACKAGE_VERSION = '1.2.3';\n"
        "export const TARGETED_RPC_VERSION = '0.9.0-beta';\n"
    )


def test_generate_is_idempotent_and_overwrites(tmp_path):
    sdk = _make_sdk_tree(tmp_path)
    out = sdk / "src" / "version.ts"
    out.write_text("stale content that is much longer than the real file\n" * 50)
    generate(sdk / "package.json", tmp_path / "Cargo.toml", out)
    first = out.read_bytes()
    generate(sdk / "package.json", tmp_path / "Cargo.toml", out)
    assert out.read_bytes() == first
    assert b"stale content" not in first


def test_generate_uses_cwd_relative_defaults(tmp_path, monkeypatch):
    sdk = _make_sdk_tree(tmp_path)
    monkeypatch.chdir(sdk)
    generate()
    assert "'0.9.0-beta'" in (sdk / "src" / "version.ts").read_text(encoding="utf-8")


def test_missing_package_manifest_leaves_output_untouched(tmp_path):
    import pytest

    sdk = _make_sdk_tree(tmp_path)
    (sdk / "package.json").unlink()
    out = sdk / "src" / "version.ts"
    out.write_text("previous\n")
    with pytest.raises(ManifestNotFoundError):
        generate(sdk / "package.json", tmp_path / "Cargo.toml", out)
    assert out.read_text() == "previous\n"


def test_missing_workspace_manifest_writes_nothing(tmp_path):
    import pytest

    sdk = _make_sdk_tree(tmp_path)
    (tmp_path / "Cargo.toml").unlink()
    out = sdk / "src" / "version.ts"
    with pytest.raises(ManifestNotFoundError):
        generate(sdk / "package.json", tmp_path / "Cargo.toml", out)
    assert not out.exists()


def test_missing_workspace_package_version_fails(tmp_path):
    import pytest

    sdk = _make_sdk_tree(
        tmp_path, cargo_toml='[package]\nname = "x"\nversion = "0.1.0"\n'
    )
    out = sdk / "src" / "version.ts"
    with pytest.raises(MissingFieldError) as excinfo:
        generate(sdk / "package.json", tmp_path / "Cargo.toml", out)
    assert excinfo.value.key_path == "workspace.package.version"
    assert not out.exists()


def test_missing_package_version_fails(tmp_path):
    import pytest

    sdk = _make_sdk_tree(tmp_path, package_json='{"name": "@scope/sdk"}')
    with pytest.raises(MissingFieldError):
        read_package_manifest(sdk / "package.json")


def test_non_object_package_manifest_is_missing_field(tmp_path):
    import pytest

    sdk = _make_sdk_tree(tmp_path, package_json='["1.2.3"]')
    with pytest.raises(MissingFieldError):
        read_package_manifest(sdk / "package.json")


def test_non_string_version_is_rejected(tmp_path):
    import pytest

    sdk = _make_sdk_tree(tmp_path, cargo_toml="[workspace.package]\nversion = 3\n")
    with pytest.raises(MissingFieldError) as excinfo:
        read_workspace_manifest(tmp_path / "Cargo.toml")
    assert "not a string" in str(excinfo.value)


def test_workspace_keys_that_are_not_tables_are_missing_field(tmp_path):
    import pytest

    for i, cargo_toml in enumerate(['[workspace]\npackage = "x"\n', "workspace = 1\n"]):
        root = tmp_path / f"ws{i}"
        root.mkdir()
        (root / "Cargo.toml").write_text(cargo_toml, encoding="utf-8")
        with pytest.raises(MissingFieldError) as excinfo:
            read_workspace_manifest(root / "Cargo.toml")
        assert excinfo.value.key_path == "workspace.package.version"


def test_malformed_manifests_raise_parse_error(tmp_path):
    import pytest

    sdk = _make_sdk_tree(
        tmp_path, package_json='{"version": ', cargo_toml="[workspace.package\n"
    )
    with pytest.raises(ManifestParseError):
        read_package_manifest(sdk / "package.json")
    with pytest.raises(ManifestParseError):
        read_workspace_manifest(tmp_path / "Cargo.toml")


def test_invalid_utf8_is_parse_error(tmp_path):
    import pytest

    path = tmp_path / "package.json"
    path.write_bytes(b'{"version": "\xff"}')
    with pytest.raises(ManifestParseError):
        read_package_manifest(path)


def test_write_to_missing_directory_fails(tmp_path):
    import pytest

    sdk = _make_sdk_tree(tmp_path)
    with pytest.raises(VersionFileWriteError):
        generate(
            sdk / "package.json",
            tmp_path / "Cargo.toml",
            sdk / "no-such-dir" / "version.ts",
        )


def test_main_without_arguments(tmp_path, monkeypatch, capsys):
    sdk = _make_sdk_tree(tmp_path)
    monkeypatch.chdir(sdk)
    assert main([]) == EXIT_OK
    assert (sdk / "src" / "version.ts").read_text(encoding="utf-8") == (
        render_version_file("1.2.3", "0.9.0-beta")
    )
    assert "PACKAGE_VERSION=1.2.3" in capsys.readouterr().out


def test_main_reports_errors_on_stderr(tmp_path, monkeypatch, capsys):
    sdk = _make_sdk_tree(tmp_path, cargo_toml="[workspace]\nmembers = []\n")
    monkeypatch.chdir(sdk)
    assert main([]) == EXIT_ERROR
    err = capsys.readouterr().err
    assert "error:" in err
    assert "workspace.package.version" in err
    assert not (sdk / "src" / "version.ts").exists()


def test_main_check_mode(tmp_path, capsys):
    sdk = _make_sdk_tree(tmp_path)
    out = sdk / "src" / "version.ts"
    argv = [
        "--package-manifest",
        str(sdk / "package.json"),
        "--workspace-manifest",
        str(tmp_path / "Cargo.toml"),
        "--output",
        str(out),
        "--check",
    ]

    # Missing output is stale and check mode never creates it.
    assert main(argv) == EXIT_STALE
    assert not out.exists()

    assert main(argv[:-1]) == EXIT_OK
    assert main(argv) == EXIT_OK
    capsys.readouterr()

    (sdk / "package.json").write_text('{"version": "1.2.4"}', encoding="utf-8")
    assert main(argv) == EXIT_STALE
    err = capsys.readouterr().err
    assert "+export const PACKAGE_VERSION = '1.2.4';" in err
    assert "'1.2.3'" in out.read_text(encoding="utf-8")


def test_check_rejects_crlf_line_endings(tmp_path):
    sdk = _make_sdk_tree(tmp_path)
    out = sdk / "src" / "version.ts"
    crlf = render_version_file("1.2.3", "0.9.0-beta").replace("\n", "\r\n")
    out.write_bytes(crlf.encode("utf-8"))
    argv = [
        "--package-manifest",
        str(sdk / "package.json"),
        "--workspace-manifest",
        str(tmp_path / "Cargo.toml"),
        "--output",
        str(out),
    ]

    assert check(sdk / "package.json", tmp_path / "Cargo.toml", out) != []
    assert main(argv + ["--check"]) == EXIT_STALE
    assert out.read_bytes() == crlf.encode("utf-8")

    # Regenerating normalizes to LF, after which check passes.
    assert main(argv) == EXIT_OK
    assert b"\r\n" not in out.read_bytes()
    assert main(argv + ["--check"]) == EXIT_OK


def test_main_writes_what_generate_returns(tmp_path, capsys):
    sdk = _make_sdk_tree(tmp_path)
    out = sdk / "src" / "version.ts"
    argv = [
        "--package-manifest",
        str(sdk / "package.json"),
        "--workspace-manifest",
        str(tmp_path / "Cargo.toml"),
        "--output",
        str(out),
    ]
    assert main(argv) == EXIT_OK
    from_cli = out.read_bytes()
    assert "TARGETED_RPC_VERSION=0.9.0-beta" in capsys.readouterr().out

    generated = generate(sdk / "package.json", tmp_path / "Cargo.toml", out)
    assert out.read_bytes() == from_cli == generated.text.encode("utf-8")


def test_wrapped_errors_keep_their_cause(tmp_path):
    import pytest

    sdk = _make_sdk_tree(
        tmp_path, package_json='{"version": ', cargo_toml="[workspace.package\n"
    )
    with pytest.raises(ManifestParseError) as excinfo:
        read_package_manifest(sdk / "package.json")
    assert isinstance(excinfo.value.__cause__, json.JSONDecodeError)
    with pytest.raises(ManifestParseError) as excinfo:
        read_workspace_manifest(tmp_path / "Cargo.toml")
    assert isinstance(excinfo.value.__cause__, tomllib.TOMLDecodeError)
    with pytest.raises(ManifestNotFoundError) as excinfo:
        read_package_manifest(tmp_path / "missing.json")
    assert isinstance(excinfo.value.__cause__, FileNotFoundError)
