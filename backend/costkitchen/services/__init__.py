"""CostKitchen state-core services."""
