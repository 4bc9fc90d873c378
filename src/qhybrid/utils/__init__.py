# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: 2026 qhybrid

"""Shared utilities: identifiers, timestamps and count distributions."""
