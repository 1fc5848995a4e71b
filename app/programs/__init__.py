"""
Programs app: the Program Registry.

A Program is a creator's sellable recurring offering: its price reference,
trial terms, and a capacity counter. The registry owns the counter and
exposes the only two operations allowed to move it, reserve_slot and
release_slot, each a single conditional UPDATE.

Related apps:
    - billing: holds one slot per subscription while the slot_held flag is set
"""
