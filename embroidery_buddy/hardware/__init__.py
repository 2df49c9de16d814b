"""USB gadget hardware integration."""
