import argparse
import sys
from pathlib import Path

from usb_provisioner import __version__
from usb_provisioner.config import settings
from usb_provisioner.config.settings import ProvisionConfig
from usb_provisioner.exceptions import ProvisionerError
from usb_provisioner.logging import LoggerFactory, setup_logging
from usb_provisioner.pipeline import EXIT_OK, EXIT_USAGE, exit_code_for, plan_layout, run
from usb_provisioner.plan.parser import serialize_layout


def build_parser():
    parser = argparse.ArgumentParser(
        prog="usb-provisioner",
        description="Partition a device and install a live OS image with persistence",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("-d", "--device", required=True, help="Target block device, e.g. /dev/sdb")
    parser.add_argument("-i", "--image", required=True, help="OS image (ISO) to install")
    parser.add_argument("-p", "--plan", type=Path, help="Custom partition plan file")
    parser.add_argument(
        "--no-storage",
        dest="storage",
        action="store_false",
        default=None,
        help="Do not create the Windows-readable storage partition",
    )
    parser.add_argument(
        "--persistence-size",
        help="Persistence partition size, e.g. 4GiB (0 disables persistence)",
    )
    parser.add_argument("--root-size", help="Root partition size (default: 1.05x image size)")
    parser.add_argument("--root-slot", type=int, help="Table slot of the root partition")
    parser.add_argument("--resolution", dest="console_resolution", help="grub gfxmode, e.g. 1024x768")
    parser.add_argument(
        "-f",
        "--force-unmount",
        action="store_true",
        default=None,
        help="Unmount mounted partitions of the device instead of failing",
    )
    parser.add_argument("-n", "--dry-run", action="store_true", help="Only show what would be done")
    parser.add_argument(
        "--print-layout",
        action="store_true",
        help="Print the resolved layout in plan format and exit",
    )
    parser.add_argument("--settings", type=Path, help="Settings file (JSON)")
    parser.add_argument("--log-dir", type=Path, help="Directory for log files")
    parser.add_argument("--debug", action="store_true", help="Enable verbose debug output")
    parser.add_argument("--trace", action="store_true", help="Also log raw tool output")
    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    values = settings.load_settings(args.settings)
    try:
        config = ProvisionConfig.from_settings(
            values,
            device=args.device,
            image=args.image,
            plan_path=args.plan,
            storage=args.storage,
            persistence_size=args.persistence_size,
            root_size=args.root_size,
            root_slot=args.root_slot,
            console_resolution=args.console_resolution,
            force_unmount=args.force_unmount,
            dry_run=args.dry_run,
            debug=args.debug,
            trace=args.trace,
            log_dir=args.log_dir,
        )
    except ValueError as error:
        parser.print_usage(sys.stderr)
        print(f"{parser.prog}: error: {error}", file=sys.stderr)
        return EXIT_USAGE

    setup_logging(debug=config.debug, trace=config.trace, log_dir=config.log_dir)
    log = LoggerFactory.for_system()

    if args.print_layout:
        try:
            layout, _roles = plan_layout(config)
        except (ProvisionerError, FileNotFoundError, ValueError) as error:
            log.error(str(error))
            return exit_code_for(error)
        sys.stdout.write(serialize_layout(layout))
        return EXIT_OK

    return run(config)


if __name__ == "__main__":
    sys.exit(main())
