"""
Dynamic network sim resimulates the contact network of a stochastic epidemic model at every time step. The network
follows a statistical network model (a formation model plus, for time-evolving networks, a dissolution model), and its
density is corrected as the active population grows or shrinks so that the mean degree stays on target.

The main module is `network_resimulation`, with :meth:`simulateInitialNetwork` drawing the network at step 1 and
:meth:`resimulateNetwork` advancing it at every step after that. Two network representations are supported: the full
`FullNetwork`, which keeps its whole history, and the compact `CompactNetwork`, which keeps only an edge list.
"""
