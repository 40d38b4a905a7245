"""
QueueRank: ranked-choice song aggregation engine.

Converts per-participant ordered song rankings into a community ranking using
a Copeland pairwise tournament under two comparison policies (Consensus and
Discovery) and flags hidden gems where the policies disagree.
"""
