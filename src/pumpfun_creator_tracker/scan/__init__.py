"""Historical scan layer - Startup backfill of migrated coins."""
