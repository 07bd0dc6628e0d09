"""
common package
==============

Building blocks shared by the value agents:

- spaces / experience / batch : data model and minibatch tensors
- config / errors             : agent hyperparameters and error taxonomy
- networks                    : reference Q and quantile networks
- optimizers                  : optimizer / scheduler factories
- policies                    : capabilities and the shared agent core
- loggers                     : Logger frontend and writer backends
- utils                       : conversion, loss and logger helpers
- testers                     : runnable test modules
"""
