"""Storage backends: github (remote contents API), local (SQLite), local-git (embedded repository)."""
