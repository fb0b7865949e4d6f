"""Provisioning engine — runner, retry, probe, provisioner, background tasks."""
