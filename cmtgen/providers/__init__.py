"""Provider adapters implementing the commit client contract."""
