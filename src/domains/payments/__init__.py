"""Payment attempt lifecycle: transaction records, storage, gateway, orchestration."""
