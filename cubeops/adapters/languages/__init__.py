"""Language toolchain drivers — node package links."""
