"""Allow `python -m bangchat` to start a chat session."""

import sys

from bangchat.main import main

sys.exit(main())
