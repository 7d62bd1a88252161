"""
Core module for the depth-fused detection node.

Contains the frame stager, the three-slot ring pipeline, temporal
smoothing, depth fusion geometry, one-shot request tracking, the event
bus, typed records and the protocol definitions of the collaborators.
"""
