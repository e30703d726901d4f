#!/usr/bin/env python3
"""
Server Security Setup - Main Script

Modular hardening for Debian and Ubuntu servers: SSH, UFW firewall,
Fail2Ban, automatic updates and user accounts.

Usage:
    sudo python3 security_setup.py --all
    sudo python3 security_setup.py --ssh --firewall --dry-run

License: MIT
"""

import sys

from hardening.orchestrator import main

if __name__ == "__main__":
    sys.exit(main())
