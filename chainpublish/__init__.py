"""chainpublish: deploy, verify and register compliance-definition contracts."""
