from .world_data_source import ActorVitals, StaticWorldDataSource, WorldDataSource
