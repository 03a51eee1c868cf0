"""Aligned tables, JSON printing and coloured status output."""