# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
"""Per-user NVM, Node.js and PM2. No apps, no services."""
