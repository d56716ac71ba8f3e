"""
sync — reconciles local tasks, projects and departments with Linear.

The orchestrator owns ordering and failure policy; the mapping store owns
the local ↔ Linear correlation; the local entity source is the HR side's
read/write interface.
"""
