import sys

from usb_provisioner.main import main


if __name__ == "__main__":
    sys.exit(main())
