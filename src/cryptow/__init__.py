# SPDX-FileCopyrightText: 2026 Cryptow Contributors
#
# SPDX-License-Identifier: GPL-3.0-or-later

"""Run commands with gocryptfs-mounted storage and pass-backed secrets."""

__version__ = "0.2.0"
