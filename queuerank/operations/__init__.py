"""
Operations Layer

Business logic operations that compose database access into multi-step,
transactional workflows over participant ranking lists.

- PositionCompactor: keeps one participant's positions gapless (1..N)
- RankingOperations: add/remove/replace/reorder rankings and global song removal
"""
