###############################################################
#
# HADeck – StreamDeck panel for Home Assistant and MQTT
#
# Copyright (C) 2026 Peter Damerau
# https://www.talla83.de
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
###############################################################

"""Live mirror of tracked Home Assistant entities"""

import logging

from .styling import effective_spec

log = logging.getLogger(__name__)


def tracked_entities(config):
    """
    Derive the tracked entity set of a configuration

    Args:
        config: DeviceConfig

    Returns:
        Dict of {entity_id: {(page_name, key), ...}}
    """
    tracked = {}
    for page_name, page in config.pages.items():
        for spec in page.buttons:
            entity_id = spec.tracked_entity
            if entity_id:
                tracked.setdefault(entity_id, set()).add((page_name, spec.key))
    return tracked


class EntityStateTracker:
    """
    Keeps the latest state per entity and restyles dependent keys

    Only mutated from the dispatcher. Buttons on other pages pick up
    the latest state when their page is rendered next, via style().
    """

    def __init__(self, navigation=None, session=None):
        """
        Args:
            navigation: NavigationEngine whose current page is kept in sync
            session: HomeAssistantSession, or None for static rendering
        """
        self.navigation = navigation
        self.session = session
        self.states = {}
        self.tracked = {}

    @property
    def entity_ids(self):
        return set(self.tracked)

    def update_config(self, config):
        """Rebuild the tracked set from scratch"""
        self.tracked = tracked_entities(config)
        log.info("Tracking %d entities: %s", len(self.tracked), ", ".join(sorted(self.tracked)))

    async def resync(self):
        """Let the live session follow the tracked set"""
        if self.session is not None and self.tracked:
            await self.session.refresh()

    def start(self):
        if self.session is None:
            log.warning("No Home Assistant session, state tracking disabled")
            return
        self.session.start()

    async def stop(self):
        if self.session is not None:
            await self.session.stop()

    def state(self, entity_id):
        return self.states.get(entity_id)

    def style(self, spec):
        """Effective spec of a button given the latest known state"""
        entity_id = spec.tracked_entity
        if entity_id is None:
            return spec
        return effective_spec(spec, self.states.get(entity_id))

    def apply(self, state):
        """
        Record a state push and re-render affected keys

        Only keys on the currently displayed page are refreshed, and
        only those tracking this entity.

        Returns:
            List of refreshed key indices
        """
        self.states[state.entity_id] = state
        log.debug("State changed: %s -> %s", state.entity_id, state.state)

        navigation = self.navigation
        if navigation is None:
            return []
        page = navigation.page
        refreshed = []
        for page_name, key in sorted(self.tracked.get(state.entity_id, ())):
            if page_name != navigation.current_page or page is None:
                continue
            spec = page.button(key)
            if spec is not None:
                log.debug("Re-rendering key %d for %s", key, state.entity_id)
                navigation.refresh_key(spec)
                refreshed.append(key)
        return refreshed
