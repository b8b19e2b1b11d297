# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

"""HTTP API and unified aiohttp server."""
