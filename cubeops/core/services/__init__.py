"""Operations built on the provisioning engine."""
