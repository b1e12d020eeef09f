"""
Flow Builder Core.

Backend for agent flow graphs. This package provides:

1. Graph Model:
   - Start, End, Agent, If and DataStore nodes joined by edges
   - Typed If-node conditions with draft and valid lists

2. Canvas:
   - Reachability from Start and to End, cached by graph structure
   - Flow validation and Draft/Ready/Error readiness
   - A single update contract serialized per flow

3. Conditions:
   - Operators per data type (string, number, integer, boolean)
   - AND/OR evaluation of If nodes

4. Agent References:
   - Whole-word rewriting of agent names after a rename
"""

__version__ = "1.0.0"
