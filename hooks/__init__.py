"""Jellyfin notification handlers."""
from hooks.handlers import dispatch, handle_playback_stop, handle_user_data_saved

__all__ = ['dispatch', 'handle_playback_stop', 'handle_user_data_saved']
