# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# vmoperator/cli.py
"""
vm-operator command line.

    vm-operator --config operator.yaml -v              # run the controllers
    vm-operator --config operator.yaml --dump-config   # show merged config
    vm-operator --once --vm default/vm-1               # one reconcile, then exit
"""
from __future__ import annotations

import argparse
import sys
from typing import Any, Dict, Optional, Sequence, Tuple

from rich.console import Console
from rich.table import Table

from .controlplane import KubeStore, RemoteClusterClientFactory, build_api_client
from .core.admission import AdmissionGate
from .core.config import OperatorConfig, load_config
from .core.exceptions import Fatal, format_exception_for_cli
from .core.logger import Log, c
from .manager import ControllerManager
from .orchestrator import OperationReconciler, VirtualMachineReconciler
from .provider.vm_provider import VSphereVMProvider
from .vmware.client import VSphereClient


def build_parser() -> argparse.ArgumentParser:
    from . import __version__

    p = argparse.ArgumentParser(
        prog="vm-operator",
        description=c("vm-operator: VirtualMachine and migration controllers for vSphere", "green", ["bold"]),
    )
    p.add_argument(
        "--config",
        action="append",
        default=[],
        help="YAML config file (repeatable; later overrides earlier).",
    )
    p.add_argument("--dump-config", action="store_true", help="Print merged config and exit.")
    p.add_argument("--version", action="version", version=__version__)
    p.add_argument("-v", "--verbose", action="count", default=0, help="Verbosity: -vv debug, -vvv trace")
    p.add_argument("-q", "--quiet", action="count", default=0, help="Less output: -q warnings, -qq errors")
    p.add_argument("--log-file", dest="log_file", default=None, help="Write logs to file.")
    p.add_argument("--json-logs", dest="json_logs", action="store_true", help="Emit NDJSON log lines.")

    g = p.add_argument_group("control plane")
    g.add_argument("--kubeconfig", default=None, help="kubeconfig path (default: $KUBECONFIG or ~/.kube/config).")
    g.add_argument("--in-cluster", dest="in_cluster", action="store_true", default=None, help="Use the in-cluster service account.")
    g.add_argument("--namespace", dest="watch_namespace", default=None, help="Only watch this namespace.")

    g = p.add_argument_group("vCenter")
    g.add_argument("--vc-host", dest="vc_host", default=None)
    g.add_argument("--vc-user", dest="vc_user", default=None)
    g.add_argument("--vc-password-env", dest="vc_password_env", default=None, help="Environment variable holding the password.")
    g.add_argument("--vc-insecure", dest="vc_insecure", action="store_true", default=None, help="Skip TLS verification.")

    g = p.add_argument_group("concurrency")
    g.add_argument("--max-concurrent-reconciles", dest="max_concurrent_reconciles", type=int, default=None)
    g.add_argument(
        "--max-create-vms-on-provider",
        dest="max_create_vms_on_provider",
        type=int,
        default=None,
        help="Percentage of reconcile workers allowed to create VMs at once.",
    )

    g = p.add_argument_group("single reconcile")
    g.add_argument("--once", action="store_true", help="Reconcile one object and exit.")
    g.add_argument("--vm", default=None, metavar="NS/NAME", help="VirtualMachine to reconcile with --once.")
    g.add_argument("--operation", default=None, metavar="NS/NAME", help="Operation to reconcile with --once.")
    return p


_OVERRIDE_KEYS = (
    "kubeconfig",
    "in_cluster",
    "watch_namespace",
    "vc_host",
    "vc_user",
    "vc_password_env",
    "vc_insecure",
    "max_concurrent_reconciles",
    "max_create_vms_on_provider",
)


def _split_ref(ref: str) -> Tuple[str, str]:
    ns, sep, name = (ref or "").partition("/")
    if not sep or not ns or not name:
        raise Fatal(2, f"expected NAMESPACE/NAME, got {ref!r}")
    return ns, name


def dump_config(cfg: OperatorConfig, console: Optional[Console] = None) -> None:
    console = console or Console()
    table = Table(title="vm-operator configuration", show_lines=False)
    table.add_column("key", style="bold cyan")
    table.add_column("value")
    for k, v in sorted(cfg.to_dict(redact=True).items()):
        table.add_row(k, "" if v is None else str(v))
    console.print(table)


def build_manager(cfg: OperatorConfig, logger: Any = None) -> ControllerManager:
    logger = logger or Log.get()
    api_client = build_api_client(kubeconfig=cfg.kubeconfig, in_cluster=cfg.in_cluster, logger=logger)
    store = KubeStore(api_client, logger=Log.get("store"))

    client = VSphereClient.from_config(Log.get("vsphere"), cfg)
    if not client.has_creds():
        raise Fatal(2, "vCenter host, user and password are required (vc_host / vc_user / vc_password[_env])")
    client.connect()

    provider = VSphereVMProvider(store, client, cfg, AdmissionGate(), logger=Log.get("provider"))
    reconcilers: Dict[str, Any] = {
        VirtualMachineReconciler.kind: VirtualMachineReconciler(store, provider, cfg, logger=Log.get("vm-controller")),
        OperationReconciler.kind: OperationReconciler(
            store, provider, RemoteClusterClientFactory(store, logger=Log.get("remote")), logger=Log.get("operation-controller")
        ),
    }
    return ControllerManager(cfg, store, reconcilers, logger=Log.get("manager"))


def run(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logger = Log.setup(args.verbose, args.log_file, quiet=args.quiet, json_logs=args.json_logs)

    overrides = {k: getattr(args, k, None) for k in _OVERRIDE_KEYS}
    cfg = load_config(args.config, overrides=overrides, logger=logger)

    if args.dump_config:
        dump_config(cfg)
        return 0

    if args.once and not (args.vm or args.operation):
        raise Fatal(2, "--once needs --vm NS/NAME or --operation NS/NAME")

    manager = build_manager(cfg, logger)
    if args.once:
        kind = "VirtualMachine" if args.vm else "Operation"
        ns, name = _split_ref(args.vm or args.operation)
        Log.banner(logger, f"{kind} {ns}/{name}")
        result = manager.run_once(kind, ns, name)
        if result.wants_requeue:
            logger.info("%s %s/%s is not ready yet", kind, ns, name)
        return 0

    Log.banner(logger, "vm-operator")
    manager.run()
    return 0


def main(argv: Optional[Sequence[str]] = None) -> None:
    try:
        rc = run(argv)
    except Fatal as e:
        print(f"💥 ERROR    {format_exception_for_cli(e, verbose=1)}", file=sys.stderr)
        rc = e.code
    except KeyboardInterrupt:
        print("Interrupted by user (Ctrl+C).", file=sys.stderr)
        rc = 130
    except Exception as e:
        print(f"💥 UNHANDLED {type(e).__name__}: {format_exception_for_cli(e, verbose=2)}", file=sys.stderr)
        rc = 1
    raise SystemExit(rc)


if __name__ == "__main__":
    main()
