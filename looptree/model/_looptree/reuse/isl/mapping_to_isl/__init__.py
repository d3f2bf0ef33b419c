"""
Lowering of a fused mapping into ISL relations: tilings, loop bound inference,
skews and occupancies.
"""
