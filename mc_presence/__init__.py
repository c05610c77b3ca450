"""Minecraft player presence and playtime tracker."""
