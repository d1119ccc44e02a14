"""Application host for local development resources.

Small, single-process host that demonstrates:
 - a resource notification channel (immutable snapshots, any number of watchers)
 - rewriting localhost URLs to forwarded addresses inside a GitHub Codespace
 - a simulated custom resource that becomes healthy after a startup delay
 - health checks polled by the host
"""
