"""Chrome DevTools Protocol client: discovery, per-target sessions, session manager."""
