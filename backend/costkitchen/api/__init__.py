"""CostKitchen HTTP routers."""
