"""nodekeeper.

Container lifecycle and consistency recovery for a single application-hosting node:
 - per-container resource sampling with bounded in-memory history
 - self-healing when a monitored container disappears out of band
 - post-reboot recovery (restart everything once after an OS restart)
 - mount-drift recovery (restart containers that started before their mounts existed)

Monitoring history is intentionally in-memory only; it spans this process's uptime.
"""
