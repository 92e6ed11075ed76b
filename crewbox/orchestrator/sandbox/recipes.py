"""Default build recipes."""

BARE_RECIPE = """\
FROM alpine:3.19
RUN apk add --no-cache bash
WORKDIR /workspace
"""
"""Used when a workspace is created without a recipe or template."""

PROJECT_RECIPE = """\
FROM python:3.11-slim
RUN apt-get update && apt-get install -y curl git && rm -rf /var/lib/apt/lists/*
RUN pip install --no-cache-dir requests pytest
WORKDIR /workspace
"""
"""Used for the workspace a project provisions when none is supplied."""
