"""Last-mile route construction service."""
