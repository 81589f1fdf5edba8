# Copyright 2025 Ben Mensi
# SPDX-License-Identifier: Apache-2.0

"""Python script filter stage for telemetry pipelines."""

__version__ = "1.0.0"
