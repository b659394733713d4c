"""General-purpose capabilities under the ``utilities`` namespace.

Each service module's public functions are addressable as
``utilities.<service>.<function>``, e.g. ``utilities.math.add``.
"""

__services__ = ("math", "text", "datetime", "json")
