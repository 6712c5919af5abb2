"""
Command-line scripts for the N-Sink engine.

This package contains:
- trace_flowpath: Trace one flow path and report removal along it
- generate_static_maps: Build the four watershed static maps
"""
