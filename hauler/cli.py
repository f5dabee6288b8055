"""Command-line interface: argument parsing and command dispatch."""

from __future__ import annotations

import argparse
import dataclasses
import http.server
import json
import logging
import sys
from typing import Any, Callable, Iterator, Sequence

from hauler.extract import extract_cmd
from hauler.flags import (
    CliRootOpts,
    CopyOpts,
    ExtractOpts,
    InfoOpts,
    LoadOpts,
    SaveOpts,
    ServeFilesOpts,
    ServeRegistryOpts,
    StoreRootOpts,
)
from hauler.info import info_cmd
from hauler.oci import (
    ANNOTATION_IMAGE_NAME,
    ANNOTATION_REF_NAME,
    Descriptor,
    Layout,
    parse_digest,
)
from hauler.save import save_cmd
from hauler.server import new_file_server
from hauler.transfer import _split_reference, copy_cmd, load_cmd
from hauler.version import get_version_info

PROG = "hauler"
SHORT = "Airgap Swiss Army Knife"
INFO_TYPES = ("image", "chart", "file", "sigs", "atts", "sbom", "all")

_log = logging.getLogger(PROG)


def _opts(cls: type, args: argparse.Namespace) -> Any:
    values = vars(args)
    names = {f.name for f in dataclasses.fields(cls)}
    return cls(**{name: values[name] for name in names if name in values})


# ---- serving ---------------------------------------------------------------


def _registry_handler(layout: Layout) -> type[http.server.BaseHTTPRequestHandler]:
    class Handler(http.server.BaseHTTPRequestHandler):
        def log_message(self, format: str, *args: object) -> None:
            _log.info("%s %s", self.address_string(), format % args)

        def _reply(self, status: int, body: bytes = b"", media_type: str = "", digest: str = "") -> None:
            self.send_response(status)
            self.send_header("X-Content-Type-Options", "nosniff")
            self.send_header("Docker-Distribution-API-Version", "registry/2.0")
            if media_type:
                self.send_header("Content-Type", media_type)
            if digest:
                self.send_header("Docker-Content-Digest", digest)
            self.send_header("Content-Length", str(len(body)))
            self.end_headers()
            if self.command != "HEAD":
                self.wfile.write(body)

        def _manifest(self, name: str, ref: str) -> tuple[Descriptor, bytes] | None:
            for _, desc in layout.walk():
                annotated = desc.annotations.get(ANNOTATION_IMAGE_NAME) or desc.annotations.get(
                    ANNOTATION_REF_NAME
                )
                if desc.digest == ref or (annotated and _split_reference(annotated) == (name, ref)):
                    return desc, layout.fetch(desc)
            return None

        def _route(self) -> None:
            path = self.path.split("?", 1)[0]
            if path in ("/v2", "/v2/"):
                self._reply(200, b"{}", "application/json")
                return
            if not path.startswith("/v2/"):
                self._reply(404)
                return
            rest = path[len("/v2/"):]
            for kind in ("/manifests/", "/blobs/"):
                name, sep, ref = rest.rpartition(kind)
                if not sep:
                    continue
                if kind == "/manifests/":
                    found = self._manifest(name, ref)
                    if found is None:
                        self._reply(404)
                    else:
                        desc, data = found
                        self._reply(200, data, desc.media_type, desc.digest)
                    return
                try:
                    parse_digest(ref)
                    data = layout.fetch(Descriptor("application/octet-stream", ref, 0))
                except (ValueError, KeyError):
                    self._reply(404)
                    return
                self._reply(200, data, "application/octet-stream", ref)
                return
            self._reply(404)

        def do_GET(self) -> None:
            self._route()

        def do_HEAD(self) -> None:
            self._route()

        def _read_only(self) -> None:
            self._reply(405)

        do_PUT = do_POST = do_PATCH = do_DELETE = _read_only

    return Handler


def _load_config(filename: str) -> dict[str, Any]:
    with open(filename, encoding="utf-8") as handle:
        return json.load(handle)


def serve_registry(opts: ServeRegistryOpts, layout: Layout) -> None:
    """Copy the store into the registry directory and serve it read-only."""
    layout.copy_all(Layout(opts.root_dir))
    cfg = opts.default_registry_config()
    if opts.config_file:
        cfg = _load_config(opts.config_file)
    addr = (cfg.get("http") or {}).get("addr", f":{opts.port}")
    host, _, port = addr.rpartition(":")
    root = ((cfg.get("storage") or {}).get("filesystem") or {}).get("rootdirectory", opts.root_dir)

    _log.info("starting registry on port [%s]", port)
    httpd = http.server.ThreadingHTTPServer((host, int(port)), _registry_handler(Layout(root)))
    tls = (cfg.get("http") or {}).get("tls") or {}
    if tls.get("certificate") and tls.get("key"):
        import ssl

        context = ssl.create_default_context(ssl.Purpose.CLIENT_AUTH)
        context.load_cert_chain(tls["certificate"], tls["key"])
        httpd.socket = context.wrap_socket(httpd.socket, server_side=True)
    try:
        httpd.serve_forever()
    finally:
        httpd.server_close()


def serve_files(opts: ServeFilesOpts, layout: Layout) -> None:
    """Copy the store's files into the served directory and serve it."""
    copy_cmd(CopyOpts(), layout, "dir://" + opts.root_dir)
    server = new_file_server(opts)
    if opts.tls_cert and opts.tls_key:
        _log.info("starting file server with tls on port [%d]", opts.port)
        server.listen_and_serve_tls(opts.tls_cert, opts.tls_key)
    else:
        _log.info("starting file server on port [%d]", opts.port)
        server.listen_and_serve()


# ---- completion ------------------------------------------------------------


def _subcommands(parser: argparse.ArgumentParser) -> list[tuple[str, argparse.ArgumentParser]]:
    seen: dict[int, tuple[str, argparse.ArgumentParser]] = {}
    for action in parser._actions:
        if isinstance(action, argparse._SubParsersAction):
            for name, sub in action.choices.items():
                seen.setdefault(id(sub), (name, sub))
    return list(seen.values())


def _command_tree(parser: argparse.ArgumentParser, path: str = "") -> Iterator[tuple[str, list[str]]]:
    subs = _subcommands(parser)
    if subs:
        yield path, [name for name, _ in subs]
    for name, sub in subs:
        yield from _command_tree(sub, f"{path} {name}".strip())


def completion_script(shell: str, parser: argparse.ArgumentParser) -> str:
    """Return a completion script for the given shell."""
    tree = list(_command_tree(parser))
    if shell == "bash":
        cases = "".join(f'    "{p}") opts="{" ".join(n)}" ;;\n' for p, n in tree)
        return (
            "_hauler() {\n"
            '  local cur="${COMP_WORDS[COMP_CWORD]}" path="" w opts=""\n'
            '  for w in "${COMP_WORDS[@]:1:COMP_CWORD-1}"; do\n'
            '    [[ $w == -* ]] || path="$path $w"\n'
            "  done\n"
            '  case "${path# }" in\n'
            f"{cases}"
            "  esac\n"
            '  COMPREPLY=($(compgen -W "$opts" -- "$cur"))\n'
            "}\n"
            "complete -F _hauler hauler\n"
        )
    if shell == "zsh":
        cases = "".join(f'    "{p}") compadd -- {" ".join(n)} ;;\n' for p, n in tree)
        return (
            "#compdef hauler\n"
            "_hauler() {\n"
            '  local path="" w\n'
            "  for w in ${words[2,CURRENT-1]}; do\n"
            '    [[ $w == -* ]] || path="$path $w"\n'
            "  done\n"
            '  case "${path# }" in\n'
            f"{cases}"
            "  esac\n"
            "}\n"
            "compdef _hauler hauler\n"
        )
    if shell == "fish":
        lines = []
        for p, names in tree:
            cond = "__fish_use_subcommand" if not p else f"__fish_seen_subcommand_from {p.split()[-1]}"
            lines.extend(f"complete -c hauler -f -n '{cond}' -a '{n}'" for n in names)
        return "\n".join(lines) + "\n"
    if shell == "powershell":
        entries = "; ".join(
            f"'{p}' = @({', '.join(repr(n) for n in names)})" for p, names in tree
        )
        return (
            "Register-ArgumentCompleter -Native -CommandName hauler -ScriptBlock {\n"
            "  param($wordToComplete, $commandAst, $cursorPosition)\n"
            "  $path = ($commandAst.CommandElements | Select-Object -Skip 1 |"
            " Where-Object { $_.ToString() -notlike '-*' -and $_.ToString() -ne $wordToComplete } |"
            " ForEach-Object { $_.ToString() }) -join ' '\n"
            f"  $table = @{{ {entries} }}\n"
            "  $table[$path] | Where-Object { $_ -like \"$wordToComplete*\" }\n"
            "}\n"
        )
    raise ValueError(f"unsupported shell: {shell}")


# ---- parser ----------------------------------------------------------------


def _with_store(cls: type, run: Callable[[Any, Layout, argparse.Namespace], Any]):
    def handler(args: argparse.Namespace) -> Any:
        opts = _opts(cls, args)
        layout = StoreRootOpts.store(opts)
        return run(opts, layout, args)

    return handler


def _run_info(opts: InfoOpts, layout: Layout, args: argparse.Namespace) -> None:
    if opts.type_filter not in INFO_TYPES:
        raise ValueError(f"type must be one of [{' '.join(INFO_TYPES)}]")
    info_cmd(opts, layout)


def _run_version(args: argparse.Namespace) -> None:
    info = get_version_info()
    info.name = PROG
    info.description = SHORT
    info.font_name = "starwars"
    print(info.to_json() if args.json else str(info))


def _add_help_only(parser: argparse.ArgumentParser) -> None:
    parser.set_defaults(handler=lambda args: parser.print_help())


def build_parser() -> argparse.ArgumentParser:
    """Build the full command tree."""
    root = argparse.ArgumentParser(prog=PROG, description=SHORT)
    root.add_argument("-l", "--log-level", dest="log_level", default=CliRootOpts().log_level)
    _add_help_only(root)
    commands = root.add_subparsers(title="commands")

    store = commands.add_parser("store", aliases=["s"], help="Interact with the content store")
    StoreRootOpts().add_arguments(store)
    _add_help_only(store)
    store_cmds = store.add_subparsers(title="commands")

    extract = store_cmds.add_parser(
        "extract", aliases=["x"], help="Extract artifacts from the content store to disk"
    )
    ExtractOpts().add_arguments(extract)
    extract.add_argument("ref")
    extract.set_defaults(handler=_with_store(ExtractOpts, lambda o, s, a: extract_cmd(o, s, a.ref)))

    load = store_cmds.add_parser("load", help="Load a content store from a store archive")
    LoadOpts().add_arguments(load)
    load.add_argument("archives", nargs="+")
    load.set_defaults(handler=_with_store(LoadOpts, lambda o, s, a: load_cmd(o, *a.archives)))

    save = store_cmds.add_parser("save", help="Save a content store to a store archive")
    SaveOpts().add_arguments(save)
    save.set_defaults(handler=_with_store(SaveOpts, lambda o, s, a: save_cmd(o, o.file_name)))

    serve = store_cmds.add_parser(
        "serve", help="Serve the content store via an OCI Compliant Registry or Fileserver"
    )
    _add_help_only(serve)
    serve_cmds = serve.add_subparsers(title="commands")
    registry = serve_cmds.add_parser("registry", help="Serve the OCI Compliant Registry")
    ServeRegistryOpts().add_arguments(registry)
    registry.set_defaults(
        handler=_with_store(ServeRegistryOpts, lambda o, s, a: serve_registry(o, s))
    )
    files = serve_cmds.add_parser("fileserver", help="Serve the Fileserver")
    ServeFilesOpts().add_arguments(files)
    files.set_defaults(handler=_with_store(ServeFilesOpts, lambda o, s, a: serve_files(o, s)))

    info = store_cmds.add_parser(
        "info", aliases=["i", "list", "ls"], help="Print out information about the store"
    )
    InfoOpts().add_arguments(info)
    info.set_defaults(handler=_with_store(InfoOpts, _run_info))

    copy = store_cmds.add_parser("copy", help="Copy all store content to another location")
    CopyOpts().add_arguments(copy)
    copy.add_argument("target")
    copy.set_defaults(handler=_with_store(CopyOpts, lambda o, s, a: copy_cmd(o, s, a.target)))

    version = commands.add_parser("version", aliases=["v"], help="Print the current version")
    version.add_argument("--json", action="store_true", help="toggle output in JSON")
    version.set_defaults(handler=_run_version)

    completion = commands.add_parser(
        "completion", help="Generate auto-completion scripts for various shells"
    )
    _add_help_only(completion)
    shells = completion.add_subparsers(title="shells")
    for shell in ("zsh", "bash", "fish", "powershell"):
        sub = shells.add_parser(shell, help=f"Generates auto-completion scripts for {shell}")
        sub.set_defaults(
            handler=lambda args, shell=shell: sys.stdout.write(completion_script(shell, root))
        )

    return root


def main(argv: Sequence[str] | None = None) -> int:
    """Run the command line; return the exit status."""
    args = build_parser().parse_args(argv)
    level = getattr(logging, str(args.log_level).upper(), logging.INFO)
    logging.basicConfig(level=level, format="%(levelname)s %(message)s")
    try:
        args.handler(args)
    except Exception as exc:
        _log.error("%s", exc)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())