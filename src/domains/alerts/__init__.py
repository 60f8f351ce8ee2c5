"""Security alerts raised to users: templates, emitter, delivery sinks."""
