"""Client side of the pipeline: key sources, ownership gate and consumer."""
