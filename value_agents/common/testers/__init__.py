"""
Testers
====================

Runnable test modules. Each ``*_testers.py`` exposes ``TESTS`` and ``main()``:

    python -m value_agents.common.testers.dqn_testers [name_filter]

The same ``test_*`` functions are collected by pytest.
"""
