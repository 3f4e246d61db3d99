# This module assembles what the model sees each iteration
#
# +---------------------+
# |      Memory         |   (Per session, append-mostly)
# |---------------------|
# | Blackboard entries  |
# | Scratchpad          |
# | Named attributes    |
# | Artifacts           |
# +---------------------+
#
# +---------------------+
# |      State          |   (Persisted after every iteration)
# |---------------------|
# | Iteration counter   |
# | Status, stop reason |
# | Assistance request  |
# | Previous results    |
# +---------------------+
#
#    \    /
#     \  /
#      \/
# +------------------------------+
# |           Context            |   (Rebuilt for every model call)
# |------------------------------|
# | Tool catalogue, files        |
# | Windowed blackboard          |
# | Scratchpad tail, attr names  |
# | Previous results, warnings   |
# +------------------------------+
#         |
#         v
#   [LLM -> {{reference}} resolution -> tool dispatch]
