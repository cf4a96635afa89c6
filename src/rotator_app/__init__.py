# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Mirrowel

"""Terminal tools for managing the account pool."""
