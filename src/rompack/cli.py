"""Command line interface for rompack."""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

from .api import BuildOptions, build_rom, export_rom, import_rom, inspect_rom
from .errors import RomError, io_failure
from .logging import configure_logging, section, step
from .manifest import AppId
from .reporting import (
    JsonLinesReporter,
    PlainReporter,
    RichReporter,
    SilentReporter,
    get_reporter,
    set_reporter,
    set_verbosity,
)
from .signing import DEFAULT_KEY_SIZE, KeyStore
from .vfs import VfsStore, default_vfs_root


def _vfs(args: argparse.Namespace) -> VfsStore:
    return VfsStore(args.vfs or default_vfs_root())


def _build_cmd(args: argparse.Namespace) -> int:
    opts = BuildOptions(
        project_dir=args.root,
        vfs_root=args.vfs or default_vfs_root(),
        config_path=args.config,
        key_store=KeyStore(args.keys) if args.keys else None,
        required_exports=tuple(args.require_export or ()),
        sign=not args.no_sign,
        generate_key=args.new_key,
        install=not args.no_install,
        archive_path=args.archive,
        max_workers=args.jobs,
    )
    with section(f"Build {args.root}"):
        result = build_rom(opts)
    step(f"built {result.package.app_id}")
    return 0


def _export_cmd(args: argparse.Namespace) -> int:
    export_rom(args.id, args.vfs, args.output)
    return 0


def _import_cmd(args: argparse.Namespace) -> int:
    import_rom(args.archive, args.vfs)
    return 0


def _list_cmd(args: argparse.Namespace) -> int:
    for app in _vfs(args).list():
        print(app)
    return 0


def _remove_cmd(args: argparse.Namespace) -> int:
    app = AppId.parse(args.id)
    if _vfs(args).remove(app):
        step(f"removed {app}")
    else:
        step(f"{app} is not installed")
    return 0


def _inspect_cmd(args: argparse.Namespace) -> int:
    info = inspect_rom(args.target, args.vfs)
    get_reporter().flush()
    print(json.dumps(info, indent=2, sort_keys=True))
    return 0 if info["signature"]["valid"] else 1


def _key_store(args: argparse.Namespace) -> KeyStore:
    return KeyStore(args.keys) if args.keys else _vfs(args).key_store


def _keys_new_cmd(args: argparse.Namespace) -> int:
    _key_store(args).generate(args.author, key_size=args.bits)
    step(f"key for {args.author} created")
    return 0


def _keys_rm_cmd(args: argparse.Namespace) -> int:
    if _key_store(args).remove(args.author):
        step(f"key for {args.author} removed")
    else:
        step(f"no key for {args.author}")
    return 0


def _keys_export_cmd(args: argparse.Namespace) -> int:
    public = args.keys_cmd == "pub"
    output = args.output or Path(f"{args.author}.der")
    _key_store(args).export(args.author, output, public=public)
    step(f"{'public' if public else 'private'} key for {args.author} saved to {output}")
    return 0


def _keys_add_cmd(args: argparse.Namespace) -> int:
    # the author defaults to the file name without extension
    author = args.author or args.file.stem
    try:
        raw = args.file.read_bytes()
    except OSError as exc:
        raise io_failure(f"cannot read key file {args.file}", exc) from exc
    kind = "keypair" if _key_store(args).add(author, raw) else "public key"
    step(f"{kind} for {author} added")
    return 0


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="rompack", description="Build, sign and manage device ROM packages"
    )
    p.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Increase verbosity (repeatable)",
    )
    p.add_argument(
        "-r",
        "--reporter",
        choices=["plain", "rich", "json", "silent"],
        default="plain",
        help="Select reporter backend: plain (default), rich, json (JSONL events), silent",
    )
    p.add_argument(
        "--vfs",
        type=Path,
        default=None,
        help="VFS root (default: ./.rompack, $ROMPACK_VFS or ~/.local/share/rompack)",
    )
    sub = p.add_subparsers(dest="cmd", required=True)

    b = sub.add_parser("build", help="Build a ROM and install it into the VFS")
    b.add_argument("root", type=Path, nargs="?", default=Path("."))
    b.add_argument("--config", type=Path, help="Project config file")
    b.add_argument("--keys", type=Path, help="Key store directory (default: <vfs>/sys)")
    b.add_argument("--archive", type=Path, help="Also write a zip archive here")
    b.add_argument(
        "--require-export",
        action="append",
        metavar="NAME",
        help="Fail unless the module exports NAME (repeatable)",
    )
    b.add_argument("--new-key", action="store_true", help="Create the author key if missing")
    b.add_argument("--no-install", action="store_true", help="Do not install into the VFS")
    b.add_argument("--no-sign", action="store_true", help="Skip signing (implies --no-install)")
    b.add_argument("-j", "--jobs", type=int, help="Asset transcoding threads")
    b.set_defaults(func=_build_cmd)

    e = sub.add_parser("export", help="Export an installed app as an archive")
    e.add_argument("id", help="<author>.<app>")
    e.add_argument("-o", "--output", type=Path, help="Archive path or directory")
    e.set_defaults(func=_export_cmd)

    i = sub.add_parser("import", help="Verify and install an archive")
    i.add_argument("archive", type=Path)
    i.set_defaults(func=_import_cmd)

    ls = sub.add_parser("list", help="List installed apps")
    ls.set_defaults(func=_list_cmd)

    rm = sub.add_parser("remove", help="Remove an installed app")
    rm.add_argument("id", help="<author>.<app>")
    rm.set_defaults(func=_remove_cmd)

    ins = sub.add_parser("inspect", help="Inspect an archive, directory or installed app")
    ins.add_argument("target", help="Archive path, ROM directory or <author>.<app>")
    ins.set_defaults(func=_inspect_cmd)

    k = sub.add_parser("keys", help="Manage signing keys")
    k.add_argument("--keys", type=Path, help="Key store directory (default: <vfs>/sys)")
    ksub = k.add_subparsers(dest="keys_cmd", required=True)
    kn = ksub.add_parser("new", help="Generate a keypair for an author")
    kn.add_argument("author")
    kn.add_argument("--bits", type=int, default=DEFAULT_KEY_SIZE)
    kn.set_defaults(func=_keys_new_cmd)
    kr = ksub.add_parser("rm", help="Remove an author's keypair")
    kr.add_argument("author")
    kr.set_defaults(func=_keys_rm_cmd)
    for name, what in (("pub", "public"), ("priv", "private")):
        ke = ksub.add_parser(name, help=f"Export an author's {what} key")
        ke.add_argument("author")
        ke.add_argument("-o", "--output", type=Path, help="Output file (default: <author>.der)")
        ke.set_defaults(func=_keys_export_cmd)
    ka = ksub.add_parser("add", help="Add a DER key from a file")
    ka.add_argument("file", type=Path)
    ka.add_argument("--author", help="Author id (default: the file name)")
    ka.set_defaults(func=_keys_add_cmd)

    return p


def main(argv: list[str] | None = None) -> int:
    argv = argv if argv is not None else sys.argv[1:]
    parser = build_parser()
    args = parser.parse_args(argv)
    requested = args.reporter
    if requested == "json":
        set_reporter(JsonLinesReporter())
    elif requested == "silent":
        set_reporter(SilentReporter())
    elif requested == "rich" and sys.stderr.isatty():
        set_reporter(RichReporter())
    else:
        set_reporter(PlainReporter())
    set_verbosity(args.verbose)
    configure_logging(args.verbose)
    try:
        if args.cmd == "build" and args.no_sign:
            args.no_install = True
        return args.func(args)
    except RomError as exc:
        get_reporter().error(str(exc))
        return 1
    finally:
        get_reporter().flush()


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
