# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Configuration subsystem for foundry-overlay.

YAML on disk, validated into frozen pydantic models. Environment toggles
(FOUNDRY_SKIP_ATTESTATION) are applied by the loader after validation.
"""
