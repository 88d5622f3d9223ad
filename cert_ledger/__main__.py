import sys

from cert_ledger.cli import main

sys.exit(main())
